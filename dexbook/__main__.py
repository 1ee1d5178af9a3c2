import sys

from dexbook.cli import main

sys.exit(main())
