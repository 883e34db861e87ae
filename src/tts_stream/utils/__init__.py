"""
Utility Modules for tts-stream.

    - audio.py: PCM16 decoding and WAV encoding
    - timeit.py: Performance measurement utilities
"""
