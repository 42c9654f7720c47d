"""
Services annexes de l'agent ReportMate

- Suivi de l'utilisation des applications (base SQLite du service de surveillance)
"""
