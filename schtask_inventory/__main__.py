import sys

from schtask_inventory.main import main

sys.exit(main())
