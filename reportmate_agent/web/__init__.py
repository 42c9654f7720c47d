"""Interface web locale de l'agent ReportMate"""
