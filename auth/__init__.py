"""auth/ -- Authentication, credential storage, and signing for RecordVault.

Layer rule: auth/ imports only stdlib, third-party libraries, core/, and db/.
It does NOT import from api/, vault/, media/, or storage/.
api/ imports from auth/, not the other way around.
"""
