import sys

from imgbatch.cli import main

sys.exit(main())
