import sys

from kardly.cli import main

sys.exit(main())
