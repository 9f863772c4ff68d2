import sys

from rastercam.cli import main

sys.exit(main())
