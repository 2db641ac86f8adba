import sys

from smag.app import main

sys.exit(main())
