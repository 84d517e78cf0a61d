import sys

from photoarchiver.cli import main

sys.exit(main())
