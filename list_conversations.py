#!/usr/bin/env python3
"""
Diagnostic script to list all conversations of a Tumblr blog and their IDs.
This helps pick the conversation id or partner name for the export tool.
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path

import requests

from tumblr_chat_export import (
    BLOG_SUFFIX,
    CONVERSATIONS_URL,
    TumblrClient,
    TumblrExportError,
    TumblrSession,
    Traversal,
    cache_buster,
    page_conversations,
    add_login_arguments,
    authenticate,
    check_transport,
    message_datetime,
    normalize_blog,
    resolve_credentials,
)


def partner_names(conversation, blog):
    """Names of the participants other than the blog itself."""
    return [
        p.get('name', 'N/A') for p in conversation.get('participants', [])
        if p.get('name', '') + BLOG_SUFFIX != blog
    ]


def matches_partners(conversation, blog, partners):
    """
    Check if a conversation involves any of the given partner blogs.

    An empty partner list matches everything.
    """
    if not partners:
        return True
    names = [name.lower() for name in partner_names(conversation, blog)]
    return any(partner.lower() in names for partner in partners)


def format_conversation_info(number, conversation, blog):
    """Format conversation information as a string."""
    lines = []
    lines.append(f"Conversation #{number}")
    lines.append(f"  ID: {conversation.get('id', 'N/A')}")

    names = partner_names(conversation, blog)
    lines.append(f"  With: {', '.join(names) if names else '(only you)'}")

    last_modified = conversation.get('last_modified_ts')
    if last_modified:
        stamp = message_datetime(last_modified).strftime("%Y-%m-%d %H:%M:%S UTC")
        lines.append(f"  Last activity: {stamp}")

    unread = conversation.get('unread_messages_count')
    if unread:
        lines.append(f"  Unread: {unread}")

    lines.append("")
    return "\n".join(lines)


def main():
    """List all conversations with their IDs and partners."""

    timestamp = datetime.now().strftime("%Y%m%d_%H%M")
    default_filename = f"{timestamp}_tumblr_conversations.txt"

    parser = argparse.ArgumentParser(
        description="List all conversations of a Tumblr blog with IDs and partners",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List everything, saved to ./<timestamp>_tumblr_conversations.txt
  python list_conversations.py -b myblog

  # Only conversations with certain blogs, console only
  python list_conversations.py -b myblog --partners "alice;bob" --console-only
        """
    )
    add_login_arguments(parser)
    parser.add_argument(
        "--output",
        "-o",
        default=default_filename,
        help=f"Output file path (default: ./{default_filename})"
    )
    parser.add_argument(
        "--console-only",
        action="store_true",
        help="Only output to console, don't write to file"
    )
    parser.add_argument(
        "--partners",
        help="Only conversations with these blogs (semicolon-separated, OR logic)"
    )

    args = parser.parse_args()
    partners = [p.strip() for p in args.partners.split(';')] if args.partners else []

    try:
        email, password, blog = resolve_credentials(args)
        blog = normalize_blog(blog)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    output_file = None
    if not args.console_only:
        try:
            output_path = Path(args.output)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_file = open(output_path, 'w', encoding='utf-8')
            output_file.write(f"{'='*80}\nTumblr Conversations of {blog}\n{'='*80}\n\n")
            print(f"Writing to: {output_path.absolute()}\n")
        except OSError as e:
            print(f"Warning: Could not open output file: {e}", file=sys.stderr)
            output_file = None

    counts = {'shown': 0, 'filtered': 0}

    def on_page(page):
        for conversation in page_conversations(page):
            if not matches_partners(conversation, blog, partners):
                counts['filtered'] += 1
                continue
            counts['shown'] += 1
            info = format_conversation_info(counts['shown'], conversation, blog)
            print(info)
            if output_file:
                output_file.write(info + "\n")
                output_file.flush()
        return Traversal.CONTINUE

    try:
        check_transport()
        with TumblrSession(skip_ssl=args.skip_ssl) as session:
            authenticate(
                session,
                email,
                password,
                tfa_code=args.tfa,
                prompt_tfa=lambda: input("Enter 2FA code: "),
            )
            print(f"\nRetrieving conversations (streaming results as they arrive)...")
            print(f"{'='*80}\n")
            client = TumblrClient(session, verbose=False)
            client.fetch_all(
                CONVERSATIONS_URL,
                on_page,
                params={"participant": blog, "_": cache_buster()},
            )

        footer = f"\n{'='*80}\n"
        footer += f"Total conversations found: {counts['shown']}\n"
        if counts['filtered'] > 0:
            footer += f"Conversations filtered out: {counts['filtered']}\n"
        footer += f"{'='*80}\n"
        footer += "To export a conversation, use the ID shown above with --conversation\n"
        footer += f"{'='*80}\n"

        print(footer)
        if output_file:
            output_file.write(footer)

    except (TumblrExportError, requests.RequestException) as e:
        print(f"\nError retrieving conversations: {e}", file=sys.stderr)
        return 1
    finally:
        if output_file:
            output_file.close()
            print(f"\nResults saved to: {Path(args.output).absolute()}")

    return 0

if __name__ == "__main__":
    sys.exit(main())
