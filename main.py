#!/usr/bin/env python3
"""
Main entry point for the Meet in the Middle API (development server)
"""

from middlepoint.app import create_default_app

app = create_default_app()

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5001)
