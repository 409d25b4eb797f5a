#!/usr/bin/env python
"""
Diagnostic script to check the environment before running the app.
Run it from the project root: python check_env.py
"""
import os
import sys

from dotenv import load_dotenv

load_dotenv()

print("=" * 60)
print("Shopi Section Environment Diagnostic")
print("=" * 60)
print()

print(f"Python executable: {sys.executable}")
print(f"Python version: {sys.version}")
print()

print("Virtual Environment:")
venv_path = os.environ.get('VIRTUAL_ENV', 'Not activated')
print(f"  VIRTUAL_ENV: {venv_path}")
print()

print("Checking dependencies:")
packages = [
    ('flask', 'flask'),
    ('flask-cors', 'flask_cors'),
    ('python-dotenv', 'dotenv'),
    ('httpx', 'httpx'),
    ('PyJWT', 'jwt'),
    ('pytest', 'pytest'),
    ('pytest-flask', 'pytest_flask'),
    ('pytest-mock', 'pytest_mock'),
    ('respx', 'respx'),
]

for package, module in packages:
    try:
        mod = __import__(module)
        version = getattr(mod, '__version__', 'unknown')
        print(f"  ✓ {package}: {version}")
    except ImportError:
        print(f"  ✗ {package}: NOT INSTALLED")

print()
print("Shopify configuration:")
required = ['SHOPIFY_API_KEY', 'SHOPIFY_API_SECRET', 'SHOPIFY_APP_URL']
optional = ['SHOPIFY_SCOPES', 'SHOPIFY_API_VERSION', 'SHOPIFY_FALLBACK_API_VERSIONS',
            'SECTION_INSTALL_MODE', 'METAFIELD_NAMESPACE', 'DATA_DIR', 'SECRET_KEY']
missing = []
for name in required:
    value = os.environ.get(name)
    if value:
        shown = value if name == 'SHOPIFY_APP_URL' else value[:4] + '...'
        print(f"  ✓ {name}: {shown}")
    else:
        missing.append(name)
        print(f"  ✗ {name}: NOT SET")
for name in optional:
    print(f"  · {name}: {os.environ.get(name, '(default)')}")

mode = os.environ.get('SECTION_INSTALL_MODE', 'asset').strip().lower()
if mode not in ('asset', 'extension'):
    print(f"  ⚠ SECTION_INSTALL_MODE must be 'asset' or 'extension', got {mode!r}")

scopes = [s.strip() for s in os.environ.get('SHOPIFY_SCOPES', 'write_products,read_themes,write_themes').split(',')]
if mode == 'asset' and 'write_themes' not in scopes:
    print("  ⚠ SHOPIFY_SCOPES lacks write_themes; section uploads will be rejected")

print()
print("=" * 60)
print("Recommendation:")
if venv_path == 'Not activated':
    print("  Activate your virtual environment:")
    print("  source .venv/bin/activate")
elif missing:
    print(f"  Set {', '.join(missing)} in .env before starting the app")
else:
    print("  Environment looks good!")
    print("  Start the app with: python run.py")
print("=" * 60)
