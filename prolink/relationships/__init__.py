# -*- coding: utf-8 -*-
"""Professional–client relationships."""
