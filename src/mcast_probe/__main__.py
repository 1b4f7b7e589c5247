import sys

from mcast_probe.cli import main

sys.exit(main())
