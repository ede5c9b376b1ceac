import sys

from pool_schedule.cli import main

sys.exit(main())
