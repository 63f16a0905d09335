"""
Stable user-facing messages returned in the response envelope.
Clients may match on these strings, so change them with care.
"""

# Issuance
CERT_ISSUED = "Certification ID already issued"
CERT_ISSUED_SUCCESS = "Certificate issued successfully"
BATCH_ISSUED_SUCCESS = "Batch of certificates issued successfully"
ENTER_ALL_FIELDS = "Please provide all required fields"
PROVIDE_VALID_DATES = "Please provide valid dates"
OLDER_DATES_ERROR = "Grant date must be earlier than the expiration date"
CERT_LENGTH = "Certification ID length must be between {min} and {max} characters"
CERT_SPECIAL_CHARS = "Certification ID must not contain special characters"
NAME_TOO_LONG = "Name must be at most {max} characters"
COURSE_TOO_LONG = "Course name must be at most {max} characters"
INVALID_ISSUER = "Invalid issuer or issuer not approved"
INVALID_ETHEREUM = "Invalid Ethereum address"
ISSUER_UNAUTHORIZED = "Issuer is not authorized on the blockchain"
OPS_RESTRICTED = "Operations are restricted, the contract is paused"
FAILED_OPS_AT_BLOCKCHAIN = "Failed to interact with the blockchain"
FAILED_TO_ISSUE_AFTER_RETRY = "Failed to issue the certificate after multiple attempts"
NO_SIGNER = "No signing account configured for blockchain transactions"
DB_FAILED = "Failed to store the certificate record"
RECONCILIATION_REQUIRED = (
    "The certificate was issued on the blockchain but its record could not be stored"
)

# Templates and files
INVALID_PDF_TEMPLATE = "Invalid PDF template dimensions or page count"
MULTI_PAGE_PDF = "Multi-page PDF files are not supported"
PDF_HAS_QR = "The PDF template already contains a QR code"
INVALID_PDF = "Unable to read the PDF document"
MUST_PDF = "Please upload a valid PDF file"
MUST_EXCEL = "Please upload a valid Excel (.xlsx) file"
MUST_ZIP = "Please upload a valid ZIP file"
UNABLE_TO_FIND_FILES = "Unable to find files in the ZIP archive"
UNABLE_TO_FIND_EXCEL_FILES = "Unable to find an Excel file in the ZIP archive"
UNABLE_TO_FIND_PDF_FILES = "Unable to find PDF files in the ZIP archive"
INVALID_EXCEL = "Invalid Excel headers, expected: {headers}"
EXCEL_NO_RECORDS = "The Excel file has no certificate records"
EXCEL_MISSING_FIELDS = "Missing required values in the Excel file"
EXCEL_DUPLICATE_IDS = "Duplicate Certification IDs found in the Excel file"
INPUT_RECORDS_NOT_MATCHED = "Excel records do not match the uploaded PDF files"
NO_ENTRY_MATCH_FOUND = "No matching PDF entry found for the certificate"

# Verification
CERT_VALID = "Certificate is valid"
CERT_NOT_VALID = "Certificate is not valid"
CERT_NOT_EXIST = "Certificate does not exist in the batch"
VERIFIED = "Verified"
NOT_VERIFIED = "Not Verified"

# Administration
ROLE_GRANTED = "Issuer role granted"
ROLE_REVOKED = "Issuer role revoked"
ROLE_ALREADY_GRANTED = "Address already has the issuer role"
ROLE_NOT_GRANTED = "Address does not have the issuer role"
BALANCE_CHECK = "Balance check successful"
INVALID_INPUT = "Invalid input provided"
FILES_FETCHED = "Files fetched successfully"
NO_MATCH_FOUND_IN_DATES = "No files found for the given date"

# Generic
INTERNAL_ERROR = "Internal server error"
VALIDATION_FAILED = "Request validation failed"
