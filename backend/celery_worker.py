#!/usr/bin/env python3
"""
Celery worker startup script for the exam proctoring API
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from examproctor.core.celery_app import celery_app

if __name__ == '__main__':
    celery_app.start()
