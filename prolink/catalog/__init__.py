# -*- coding: utf-8 -*-
"""Permission catalog and role default bundles."""
