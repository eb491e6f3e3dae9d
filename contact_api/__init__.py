# contact_api/__init__.py
"""
Lead capture backend for the AllTech Digital contact form.
"""

__version__ = "1.0.0"
