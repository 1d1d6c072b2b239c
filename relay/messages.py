NO_ACCESS = (
    "❌ You have no checks left.\n\n"
    "Buy a package of checks or a subscription with /buy, then send the document again."
)

UNSUPPORTED = (
    "❌ This file type is not supported.\n\n"
    "Supported formats: {formats}"
)

QUEUED = "⏳ Your document is in the queue (position {position})."

PROCESSING = "📤 Processing your document..."

DELIVERY_CAPTION = "✅ Check complete!\n\n📊 Your report is attached."

FAILED = (
    "❌ Something went wrong while processing the file.\n"
    "Error: {error}\n\n"
    "Your check was not charged. Try again or contact the administrator."
)

# Extra guidance keyed by ProcessingError.reason
FAILURE_HINTS = {
    "malformed": "The file looks damaged. Re-export it from your editor and send it again.",
    "encrypted": "The PDF is password protected. Remove the password and send it again.",
    "timeout": "The service took too long to answer. Please try again in a few minutes.",
}


def failure_message(error, reason=None):
    text = FAILED.format(error=error)
    hint = FAILURE_HINTS.get(reason)
    if hint:
        text = f"{text}\n\n💡 {hint}"
    return text
