import sys

from .normalize import main

sys.exit(main())
