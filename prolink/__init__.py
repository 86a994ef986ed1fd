# -*- coding: utf-8 -*-
"""Professional–client relationship and permission authorization backend."""
