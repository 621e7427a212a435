"""
Background job workers for scene videos and final stitching.
"""
