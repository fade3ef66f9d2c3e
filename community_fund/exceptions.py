"""Custom exceptions for the community fund engine."""


class CommunityFundError(Exception):
    """Base exception for all community fund errors."""
    
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
    
    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigurationError(CommunityFundError):
    """Raised when community configuration is invalid or missing."""
    pass


class InvalidInputError(CommunityFundError):
    """Raised when an argument is malformed or out of range."""
    pass


class InvalidTransitionError(CommunityFundError):
    """Raised when a record is not in a state that allows the operation."""
    
    def __init__(self, action: str, status: str, record_id: str = None, reason: str = None):
        details = {
            'action': action,
            'status': status
        }
        if record_id:
            details['record_id'] = record_id
        
        message = f"Cannot {action} from status '{status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details)
        self.action = action
        self.status = status


class OverpaymentError(CommunityFundError):
    """Raised when a principal payment exceeds the remaining balance."""
    
    def __init__(self, principal, remaining_balance, loan_id: str = None):
        details = {
            'principal': str(principal),
            'remaining_balance': str(remaining_balance)
        }
        if loan_id:
            details['loan_id'] = loan_id
        
        message = (
            f"Principal payment {principal} exceeds remaining balance {remaining_balance}"
        )
        super().__init__(message, details)


class AmountMismatchError(CommunityFundError):
    """Raised when combined payment components do not sum to the payment amount."""
    
    def __init__(self, amount, principal, interest):
        details = {
            'amount': str(amount),
            'principal': str(principal),
            'interest': str(interest)
        }
        message = (
            f"Principal {principal} and interest {interest} "
            f"must sum to payment amount {amount}"
        )
        super().__init__(message, details)


class AlreadySettledError(CommunityFundError):
    """Raised when interest for the requested window has already been settled."""
    
    def __init__(self, loan_id: str = None, settled_through=None, reason: str = None):
        details = {}
        if loan_id:
            details['loan_id'] = loan_id
        if settled_through:
            details['settled_through'] = str(settled_through)
        
        message = reason or "Interest already settled for this period"
        super().__init__(message, details)


class RecordNotFoundError(CommunityFundError):
    """Raised when a referenced record does not exist."""
    pass


class LoanNotFoundError(RecordNotFoundError):
    """Raised when a loan cannot be found."""
    
    def __init__(self, loan_id: str = None):
        details = {}
        if loan_id:
            details['loan_id'] = loan_id
        
        message = "Loan not found"
        if loan_id:
            message = f"Loan '{loan_id}' not found"
        super().__init__(message, details)


class MemberNotFoundError(RecordNotFoundError):
    """Raised when a member cannot be found."""
    
    def __init__(self, member_id: str = None):
        details = {}
        if member_id:
            details['member_id'] = member_id
        
        message = "Member not found"
        if member_id:
            message = f"Member '{member_id}' not found"
        super().__init__(message, details)


class DatabaseError(CommunityFundError):
    """Raised when a database operation fails."""
    pass


class TransactionError(DatabaseError):
    """Raised when a database transaction fails to complete."""
    pass


class ConcurrentModificationError(DatabaseError):
    """Raised when a loan was changed by another writer since it was read."""
    
    def __init__(self, loan_id: str, expected_version: int, actual_version: int = None):
        details = {
            'loan_id': loan_id,
            'expected_version': expected_version
        }
        if actual_version is not None:
            details['actual_version'] = actual_version
        
        message = f"Loan '{loan_id}' was modified concurrently; re-read before retrying"
        super().__init__(message, details)


class HistoricalInterestNotFoundError(RecordNotFoundError):
    """Raised when a historical interest record cannot be found."""
    
    def __init__(self, record_id: str = None):
        details = {}
        if record_id:
            details['record_id'] = record_id
        
        message = "Historical interest record not found"
        if record_id:
            message = f"Historical interest record '{record_id}' not found"
        super().__init__(message, details)
