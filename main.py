"""
PulseFind Beat Identification - Main Entry Point

Example usage:
    python main.py path/to/beat.wav
    python main.py --deep --config config/config.yaml path/to/beat.wav
"""

from pulsefind.cli import main


if __name__ == "__main__":
    main()
