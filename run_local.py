#!/usr/bin/env python3
"""
Blog Post Extractor - Easy Local Runner
Installs the project, sets up the headless browser and starts the web API.
"""

import subprocess
import sys
import os


def print_banner():
    print("""
🚀 Blog Post Extractor - Local Setup
====================================
Setting up the extractor locally...
    """)


def check_python():
    """Check if Python version is compatible"""
    if sys.version_info < (3, 9):
        print("❌ Python 3.9+ required. Please upgrade Python.")
        sys.exit(1)
    print(f"✅ Python {sys.version.split()[0]} detected")


def install_dependencies():
    """Install the project and its dependencies"""
    print("\n📦 Installing dependencies...")
    try:
        subprocess.check_call([sys.executable, "-m", "pip", "install", "-e", "."])
        print("✅ Dependencies installed successfully")
    except subprocess.CalledProcessError:
        print("❌ Failed to install dependencies")
        print("💡 Try: pip install --upgrade pip")
        sys.exit(1)


def setup_browsers():
    """Setup Playwright browsers"""
    print("\n🌐 Setting up browsers...")
    try:
        subprocess.check_call([sys.executable, "-m", "playwright", "install", "chromium"])
        print("✅ Browser setup complete")
    except subprocess.CalledProcessError:
        print("⚠️  Browser setup failed; infinite-scroll discovery will be unavailable")


def check_credentials():
    """Warn when the rendering service is not configured"""
    if not (os.environ.get('RENDER_API_KEY') or os.environ.get('JINA_API_KEY')):
        print("⚠️  RENDER_API_KEY is not set; rendered pagination crawling will be skipped")


def run_app():
    """Start the web application"""
    print("\n🚀 Starting the Blog Post Extractor...")
    env = os.environ.copy()
    env['PYTHONUNBUFFERED'] = '1'
    env.setdefault('PORT', '10000')
    print(f"📍 API will listen on: http://localhost:{env['PORT']}")

    try:
        subprocess.check_call([sys.executable, "run_web.py"], env=env)
    except KeyboardInterrupt:
        print("\n👋 Shutting down gracefully...")
    except subprocess.CalledProcessError as e:
        print(f"❌ Failed to start app: {e}")
        print("💡 Try running manually: python run_web.py")


def main():
    print_banner()

    if not os.path.exists('run_web.py'):
        print("❌ run_web.py not found. Please run this script from the project directory.")
        sys.exit(1)

    check_python()
    install_dependencies()
    setup_browsers()
    check_credentials()
    run_app()


if __name__ == "__main__":
    main()
