"""
Dashboard admin - page Factures

Cache client des factures, filtres/pagination, suppression optimiste avec
renumérotation, compteur annuel et export ZIP mensuel avec progression.
"""
