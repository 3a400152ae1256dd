"""
Test configuration shared by every test suite
"""
import sys
from pathlib import Path

# Add project root (for `tests.*` helpers) and src (for `erc4337_validation.*`)
project_root = Path(__file__).parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(project_root))
sys.path.insert(0, str(src_path))
