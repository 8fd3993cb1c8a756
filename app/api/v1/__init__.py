# ================================
# API V1 INITIALIZATION (api/v1/__init__.py)
# ================================
