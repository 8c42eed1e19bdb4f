"""
gpx_route_splitter.py

Splits the route stored in a GPX file into several smaller GPX files, each holding at most a fixed number of
route points. Many handheld GPS units refuse routes above a point limit, so a long planned route has to be
delivered as a sequence of shorter parts.

Features:
- Extracts the ordered <rtept> elements of a GPX file, keeping each point's content as it was.
- Groups the points into consecutive chunks of a fixed size.
- Rebuilds one GPX document per chunk from an isolated copy of the original document.
- Renames the route and metadata to "<name> (Part N)".
- Marks the first point of each part as "start" and the last as "destination".
- Optionally pretty-prints the output and verifies it by reading it back with gpxpy.
"""

import copy
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import xml.etree.ElementTree as ET

import gpxpy
import gpxpy.gpx

logger = logging.getLogger(__name__)

DEFAULT_POINTS_PER_FILE = 50
START_TYPE = "start"
DESTINATION_TYPE = "destination"

# Children of <rtept> that follow <type> in the GPX 1.1 schema sequence
ELEMENTS_AFTER_TYPE = ("fix", "sat", "hdop", "vdop", "pdop", "ageofdgpsdata", "dgpsid", "extensions")


class GpxSplitError(Exception):
    """Base class for errors that abort the processing of a single GPX file."""


class InvalidGpxError(GpxSplitError):
    """The input file could not be read or is not well-formed XML."""


class MissingRouteError(GpxSplitError):
    """The document has route points but no <rte> element."""


class OutputWriteError(GpxSplitError):
    """An output directory or file could not be written."""


class VerificationError(GpxSplitError):
    """A written file does not read back as the expected route part."""


class DirectoryResetError(GpxSplitError):
    """The output directory could not be cleared and recreated."""


@dataclass
class SplitResult:
    """Outcome of splitting one GPX file."""
    source: Path
    total_points: int = 0
    output_files: List[Path] = field(default_factory=list)
    chunk_sizes: List[int] = field(default_factory=list)
    skipped: bool = False


def local_name(tag) -> str:
    """Return the tag name without its '{namespace}' prefix."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def namespace_of(tag: str) -> str:
    if tag.startswith("{"):
        return tag[1:].split("}", 1)[0]
    return ""


def qualified(namespace: str, name: str) -> str:
    return f"{{{namespace}}}{name}" if namespace else name


def find_first(root: ET.Element, name: str) -> Optional[ET.Element]:
    """Return the first element with the given local name in document order, or None."""
    for elem in root.iter():
        if local_name(elem.tag) == name:
            return elem
    return None


def find_child(parent: ET.Element, name: str) -> Optional[ET.Element]:
    """Return the first direct child of parent with the given local name, or None."""
    for child in parent:
        if local_name(child.tag) == name:
            return child
    return None


def find_route_points(root: ET.Element) -> List[ET.Element]:
    """Return every <rtept> element of the document in document order."""
    return [elem for elem in root.iter() if local_name(elem.tag) == "rtept"]


def parse_gpx(text: str):
    """
    Parse GPX text into an element tree.

    Args:
        text (str): The full content of a GPX file.

    Returns:
        tuple: The root element and the list of (prefix, uri) namespace declarations made on the root element.
            Declarations on nested elements (e.g. a default namespace on an extension) are left out, since
            registering them would take the prefix away from the GPX namespace.

    Raises:
        InvalidGpxError: If the text is not well-formed XML.
    """
    namespaces = []
    root = None
    try:
        for event, item in ET.iterparse(io.StringIO(text), events=("start", "start-ns")):
            if event == "start-ns":
                if root is None:
                    namespaces.append(item)
            elif root is None:
                root = item
    except ET.ParseError as e:
        raise InvalidGpxError(f"Error parsing XML: {e}") from e
    if root is None:
        raise InvalidGpxError("Document has no root element")
    return root, namespaces


def register_namespaces(namespaces):
    """Register the source document's prefixes so the output keeps them instead of ns0, ns1, ..."""
    for prefix, uri in namespaces:
        try:
            ET.register_namespace(prefix, uri)
        except ValueError:
            logger.debug(f"Prefix '{prefix}' is reserved by ElementTree, keeping generated prefix for {uri}")


def chunk_points(points: list, points_per_file: int) -> List[list]:
    """
    Partition points into consecutive chunks.

    Args:
        points (list): Ordered route points.
        points_per_file (int): Maximum number of points per chunk.

    Returns:
        list: ceil(len(points) / points_per_file) lists; all full except possibly the last.

    Raises:
        ValueError: If points_per_file is not a positive integer.
    """
    if points_per_file < 1:
        raise ValueError(f"points_per_file must be positive: {points_per_file}")
    return [points[i:i + points_per_file] for i in range(0, len(points), points_per_file)]


def part_name(base_name: str, index: int) -> str:
    return f"{base_name} (Part {index})"


def set_point_type(point: ET.Element, value: str) -> ET.Element:
    """
    Set the text of the point's <type> child, creating the child if needed.

    A new <type> uses the point's namespace and is placed before the elements the GPX schema
    lists after it, so the result keeps a valid child order.

    Args:
        point (xml.etree.ElementTree.Element): A <rtept> element.
        value (str): The new type text.

    Returns:
        xml.etree.ElementTree.Element: The <type> element.
    """
    type_elem = find_child(point, "type")
    if type_elem is None:
        type_elem = ET.Element(qualified(namespace_of(point.tag), "type"))
        children = list(point)
        position = len(children)
        for i, child in enumerate(children):
            if local_name(child.tag) in ELEMENTS_AFTER_TYPE:
                position = i
                break
        if position > 0:
            type_elem.tail = children[position - 1].tail
        else:
            type_elem.tail = point.text
        point.insert(position, type_elem)
    type_elem.text = value
    return type_elem


def rename_document(root: ET.Element, label: str):
    """Rename metadata/name (GPX 1.1) and the root-level name (GPX 1.0) when present."""
    metadata = find_first(root, "metadata")
    if metadata is not None:
        metadata_name = find_child(metadata, "name")
        if metadata_name is not None:
            metadata_name.text = label
    root_name = find_child(root, "name")
    if root_name is not None:
        root_name.text = label


def build_chunk_document(root: ET.Element, start: int, size: int, label: str) -> ET.Element:
    """
    Build the document for one chunk from a deep copy of the original root.

    Args:
        root (xml.etree.ElementTree.Element): Root of the original document. Left untouched.
        start (int): Index of the chunk's first route point in the original sequence.
        size (int): Number of points in the chunk.
        label (str): Name for the route and metadata, e.g. "trip (Part 2)".

    Returns:
        xml.etree.ElementTree.Element: Root of the new document.

    Raises:
        MissingRouteError: If the document has no <rte> element.
    """
    doc = copy.deepcopy(root)
    rename_document(doc, label)

    rte = find_first(doc, "rte")
    if rte is None:
        raise MissingRouteError("No route (<rte>) element found")

    rte_name = find_child(rte, "name")
    if rte_name is not None:
        rte_name.text = label

    points = find_route_points(doc)
    chunk = points[start:start + size]

    # Points living outside the first route would otherwise appear twice
    parents = {child: parent for parent in doc.iter() for child in parent}
    for point in points:
        parent = parents[point]
        if parent is not rte:
            parent.remove(point)

    for child in list(rte):
        rte.remove(child)

    if rte_name is not None:
        rte.append(rte_name)

    for i, point in enumerate(chunk):
        if i == 0:
            set_point_type(point, START_TYPE)
        if i == len(chunk) - 1:
            set_point_type(point, DESTINATION_TYPE)
        rte.append(point)

    return doc


def serialize_document(root: ET.Element, pretty: bool = False) -> bytes:
    """
    Serialize a document to UTF-8 XML with a declaration.

    Args:
        root (xml.etree.ElementTree.Element): Root element. Re-indented in place when pretty is set.
        pretty (bool): Indent with two spaces and drop the space before '/>'.

    Returns:
        bytes: The encoded document.
    """
    if pretty:
        ET.indent(root, space="  ")
    content = ET.tostring(root, encoding="utf-8", xml_declaration=True)
    if pretty:
        # '>' is escaped in text and attributes, so ' />' only occurs in empty tags
        content = content.replace(b" />", b"/>")
    return content


def split_gpx(input_path, output_dir, points_per_file: int = DEFAULT_POINTS_PER_FILE,
              pretty: bool = False) -> SplitResult:
    """
    Split the route of a GPX file into files of at most points_per_file route points.

    Output files are written to <output_dir>/<base name>/<base name>_split_<n>.gpx.

    Args:
        input_path (str or Path): Path to the input GPX file.
        output_dir (str or Path): Root directory for the split files.
        points_per_file (int): Maximum number of route points per output file.
        pretty (bool): Pretty-print the output files.

    Returns:
        SplitResult: The written files; skipped is set when the file has no route points.

    Raises:
        InvalidGpxError: If the file cannot be read or parsed.
        MissingRouteError: If the file has route points but no <rte>.
        OutputWriteError: If an output directory or file cannot be written.
    """
    input_path = Path(input_path)
    output_dir = Path(output_dir)
    logger.info(f"Processing: {input_path}")

    try:
        content = input_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidGpxError(f"Cannot read GPX file: {e}") from e

    root, namespaces = parse_gpx(content)
    register_namespaces(namespaces)

    result = SplitResult(source=input_path)
    route_points = find_route_points(root)
    result.total_points = len(route_points)
    if not route_points:
        logger.warning(f"⚠️ No route points (<rtept>) found in {input_path}. Skipping.")
        result.skipped = True
        return result

    chunks = chunk_points(route_points, points_per_file)
    logger.debug(f"  ↳ {len(route_points)} route points, {len(chunks)} part(s) of up to {points_per_file}")

    base_name = input_path.name[:-len(".gpx")] if input_path.name.endswith(".gpx") else input_path.stem
    file_output_dir = output_dir / base_name
    try:
        file_output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputWriteError(f"Cannot create output directory {file_output_dir}: {e}") from e

    start = 0
    for index, chunk in enumerate(chunks, 1):
        doc = build_chunk_document(root, start, len(chunk), part_name(base_name, index))
        start += len(chunk)

        output_path = file_output_dir / f"{base_name}_split_{index}.gpx"
        try:
            output_path.write_bytes(serialize_document(doc, pretty=pretty))
        except OSError as e:
            raise OutputWriteError(f"Cannot write {output_path}: {e}") from e

        result.output_files.append(output_path)
        result.chunk_sizes.append(len(chunk))
        logger.info(f"✅ Saved: {output_path}")

    logger.info(f"Finished processing: {input_path}")
    return result


def verify_split_file(path, expected_points: int) -> gpxpy.gpx.GPX:
    """
    Read a split file back with gpxpy and check it is a well-formed route part.

    Args:
        path (str or Path): Path to a file written by split_gpx.
        expected_points (int): Number of route points the part should hold.

    Returns:
        gpxpy.gpx.GPX: The parsed document.

    Raises:
        VerificationError: If the file cannot be parsed or does not match the expectations.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            gpx = gpxpy.parse(f)
    except (OSError, gpxpy.gpx.GPXException) as e:
        raise VerificationError(f"Cannot read back {path}: {e}") from e

    if len(gpx.routes) != 1:
        raise VerificationError(f"{path} has {len(gpx.routes)} routes, expected 1")

    points = gpx.routes[0].points
    if len(points) != expected_points:
        raise VerificationError(f"{path} has {len(points)} route points, expected {expected_points}")
    if len(points) > 1 and points[0].type != START_TYPE:
        raise VerificationError(f"{path}: first route point type is {points[0].type!r}, expected '{START_TYPE}'")
    if points and points[-1].type != DESTINATION_TYPE:
        raise VerificationError(f"{path}: last route point type is {points[-1].type!r}, expected '{DESTINATION_TYPE}'")

    logger.debug(f"  ↳ Verified {path} ({len(points)} route points)")
    return gpx
