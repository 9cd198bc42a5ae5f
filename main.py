"""
QEM Mesh Decimation - Command Line
==================================

Runs the ``qem-decimate`` command from a source checkout:

    python main.py --sample torus --ratio 0.1
"""

from qem_decimate.cli import main


if __name__ == "__main__":
    main()
