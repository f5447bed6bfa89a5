"""dsoul command line interface"""
