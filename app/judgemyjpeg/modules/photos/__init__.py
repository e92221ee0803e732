"""
Photos module: upload, analysis and the personal library.

Upload pipeline (POST /api/photos/analyze):
- Signature validation + optional compression (validation.py)
- Filename/EXIF/dimension moderation before any analyzer call (moderation.py)
- Quota check, then the external analyzer (analysis.py) behind a short-lived cache
- Stored image + normalized analysis; scores >= 85 are filed into "Top Photos"
"""
