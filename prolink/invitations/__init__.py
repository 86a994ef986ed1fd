# -*- coding: utf-8 -*-
"""Client invitations."""
