"""
Utility Modules for koko-ms.

    - audio.py: WAV container writers (file and streaming) and PCM conversion
    - timeit.py: Performance measurement utilities
"""
