"""
Shared utilities: exception hierarchy, engine error decorator, hashing helpers,
Parquet-first file IO and result layout constants.
"""
