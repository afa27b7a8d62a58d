"""
XML request templates for the Tally HTTP API.

Templates are Jinja2 files that render XML requests sent to Tally.
"""
from pathlib import Path

# Template directory
TEMPLATE_DIR = Path(__file__).parent

# Available templates
TEMPLATES = {
    "import_vouchers": "import_vouchers.xml.j2",
    "company_info": "company_info.xml.j2",
}

