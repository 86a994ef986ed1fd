# -*- coding: utf-8 -*-
"""Permission grant ledger and permission requests."""
