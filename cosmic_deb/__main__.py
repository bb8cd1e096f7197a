import sys

from cosmic_deb.cli import main

sys.exit(main())
