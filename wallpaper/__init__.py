"""
Daily wallpaper: acquisition and derivative cache

- Downloads the provider's image of the day into `images/{YYYYMMDD}_UHD.jpg`
  (exactly one kept; superseded days are rotated out)
- Serves resized/re-encoded derivatives from `processed/`, keyed by
  (width, height, fit, format), computing each one at most once at a time
- Background jobs: source refresh and cache purge

Entry point:
    python -m wallpaper.service serve --config config/params.yaml
"""
