import sys

from timetravel.presentation.cli import main

sys.exit(main())
