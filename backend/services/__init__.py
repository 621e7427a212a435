"""
Services module for storage, generation and usage tracking
"""
