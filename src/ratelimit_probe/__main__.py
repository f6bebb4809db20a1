import sys

from ratelimit_probe.cli import main

sys.exit(main())
