"""
BloomFund Crowdfunding Backend Package
"""
