import sys

from srcds_autoupdate.cli import main

sys.exit(main())
