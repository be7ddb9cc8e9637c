"""auth/ -- Authentication and authorization package for Storefront.

Identity verification, role checks, local user records, and the identity
provider clients.

Layer rule: auth/ imports only stdlib, third-party libraries, core/, and the
token cache. It does NOT import from api/, audit/, or vendors/.
api/ imports from auth/, not the other way around.
"""
