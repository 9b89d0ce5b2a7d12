#!/usr/bin/env python3
"""Development server runner"""
import os
from pgbackuper import create_app

if __name__ == '__main__':
    # Development config reads data/config.json and logs to data/logs
    app = create_app('development')

    port = int(os.environ.get('PORT', 5000))
    # No reloader: it would start a second scheduler in the child process
    app.run(host='0.0.0.0', port=port, debug=True, use_reloader=False)
