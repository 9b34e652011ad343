import os
import sys

# Add src to path so the client runs from a source checkout
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from pos_offline.main import main

if __name__ == "__main__":
    main()
