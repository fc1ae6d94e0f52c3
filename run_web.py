#!/usr/bin/env python3
"""
Run the Blog Post Extractor Web Interface

Starts the Flask + Socket.IO application with configuration taken from the
environment.
"""

import os
import sys
import logging

from app import app, socketio


def main():
    """Run the web application"""
    logging.basicConfig(level=logging.INFO)

    host = os.environ.get('HOST', '0.0.0.0')
    port = int(os.environ.get('PORT', 8080))
    debug = os.environ.get('FLASK_DEBUG', '0') == '1'

    print("📄  Blog Post Extractor Web Interface")
    print("=" * 50)
    print(f"🌐 Server: http://localhost:{port}")
    print(f"🔧 Debug mode: {'ON' if debug else 'OFF'}")
    print(f"🔑 Rendering service: {'configured' if os.environ.get('RENDER_API_KEY') or os.environ.get('JINA_API_KEY') else 'not configured'}")
    print("=" * 50)
    print()

    try:
        socketio.run(
            app,
            debug=debug,
            host=host,
            port=port,
            use_reloader=debug,
            allow_unsafe_werkzeug=True
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down gracefully...")
        sys.exit(0)
    except Exception as e:
        print(f"❌ Failed to start server: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
