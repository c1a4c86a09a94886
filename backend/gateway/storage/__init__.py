"""
External stores used by the pipeline: S3 snapshots, Google Sheets rows,
and the JSON configuration files for users and backend versions.
"""
