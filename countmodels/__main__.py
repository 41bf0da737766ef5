import sys

from countmodels.cli import main

sys.exit(main())
