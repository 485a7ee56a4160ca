import sys

from simple_ctv.cli import main

sys.exit(main())
