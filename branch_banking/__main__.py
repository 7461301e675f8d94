"""Run the branch teller menu: python -m branch_banking"""

import sys

from .cli import main

sys.exit(main())
